"""Flask application for proof retrieval and registry administration."""

from dataclasses import dataclass
from typing import Callable, Optional

from flask import Flask
from werkzeug.exceptions import HTTPException

from config.config import ApiConfig
from errors import RegistryError
from registry.proof_service import ProofService
from registry.registry_sync import VoterRegistrySync

from .routes import admin_bp, handle_registry_error, handle_unexpected_error, voters_bp

IdentityResolver = Callable[..., Optional[str]]


def header_identity_resolver(header_name: str = "X-Voter-Identifier") -> IdentityResolver:
    """Resolver reading the identifier an upstream auth layer put in a header"""
    def resolve(request) -> Optional[str]:
        value = request.headers.get(header_name)
        return value.strip() if value else None
    return resolve


@dataclass
class RegistryServices:
    sync: VoterRegistrySync
    proof_service: ProofService
    identity_resolver: IdentityResolver


def create_app(sync: VoterRegistrySync, proof_service: ProofService,
               identity_resolver: Optional[IdentityResolver] = None,
               api_config: Optional[ApiConfig] = None) -> Flask:
    api_config = api_config or ApiConfig()
    if identity_resolver is None:
        identity_resolver = header_identity_resolver(api_config.identity_header)

    app = Flask(__name__)
    app.extensions['voter_registry'] = RegistryServices(
        sync=sync, proof_service=proof_service, identity_resolver=identity_resolver)

    app.register_blueprint(voters_bp)
    app.register_blueprint(admin_bp)

    app.register_error_handler(RegistryError, handle_registry_error)

    @app.errorhandler(Exception)
    def _unexpected(error):
        # 404/405 and friends keep their own responses
        if isinstance(error, HTTPException):
            return error
        return handle_unexpected_error(error)

    return app


__all__ = ['create_app', 'header_identity_resolver', 'RegistryServices']
