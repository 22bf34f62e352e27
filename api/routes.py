"""
HTTP routes for proof retrieval and registry administration.

Endpoints:
- GET    /api/voters/<election_id>/merkle-proof               -> membership proof
- POST   /api/admin/elections/<election_id>/voters/batch      -> {"voterIdentifiers": [...]}
- DELETE /api/admin/elections/<election_id>/voters/<identifier>
- GET    /api/admin/elections/<election_id>/merkle-root        -> root computed from the mirror
- POST   /api/admin/elections/<election_id>/merkle-root        -> publish that root on-chain
- POST   /api/admin/elections/<election_id>/reconcile

Authentication happens upstream. The voter route asks the configured identity
resolver for the caller's identifier; admin routes assume the caller was
already authorized.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from errors import RegistryError

logger = logging.getLogger(__name__)

voters_bp = Blueprint('voters', __name__, url_prefix='/api/voters')
admin_bp = Blueprint('registry_admin', __name__, url_prefix='/api/admin/elections')

MAX_BATCH_SIZE = 1000


def _services():
    return current_app.extensions['voter_registry']


def error_response(kind: str, message: str, status: int, **extra):
    error = {'kind': kind, 'message': message}
    error.update(extra)
    return jsonify({'success': False, 'error': error}), status


def handle_registry_error(error: RegistryError):
    return jsonify({'success': False, 'error': error.to_dict()}), error.http_status


def handle_unexpected_error(error: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.path}: {error}")
    return error_response('InternalError', 'Internal server error', 500)


# ============================================================
# Voter endpoints
# ============================================================

@voters_bp.route('/<int:election_id>/merkle-proof', methods=['GET'])
def get_merkle_proof(election_id):
    """Proof that the authenticated voter is in the election's registry."""
    services = _services()
    voter_identifier = services.identity_resolver(request)
    if not voter_identifier:
        return error_response('Unauthenticated', 'Voter identity is required', 401)

    proof = services.proof_service.get_proof(election_id, voter_identifier)
    payload = {'success': True, 'electionId': str(election_id)}
    payload.update(proof.to_wire())
    return jsonify(payload)


# ============================================================
# Admin endpoints
# ============================================================

@admin_bp.route('/<int:election_id>/voters/batch', methods=['POST'])
def register_voters_batch(election_id):
    data = request.get_json(silent=True) or {}
    identifiers = data.get('voterIdentifiers')

    if not isinstance(identifiers, list) or not identifiers:
        return error_response(
            'InvalidRequest', 'voterIdentifiers must be a non-empty list', 400)
    if len(identifiers) > MAX_BATCH_SIZE:
        return error_response(
            'InvalidRequest', f'At most {MAX_BATCH_SIZE} identifiers per batch', 400)

    result = _services().sync.register_batch(election_id, identifiers)
    status = 201 if result.accepted else 200
    return jsonify({'success': True, 'data': result.to_dict()}), status


@admin_bp.route('/<int:election_id>/voters/<identifier>', methods=['DELETE'])
def remove_voter(election_id, identifier):
    receipt = _services().sync.remove_voter(election_id, identifier)
    return jsonify({
        'success': True,
        'data': {
            'electionId': str(election_id),
            'transactionHash': receipt.transaction_hash,
            'blockNumber': receipt.block_number,
        },
    })


@admin_bp.route('/<int:election_id>/merkle-root', methods=['GET'])
def get_computed_root(election_id):
    root = _services().sync.compute_root(election_id)
    return jsonify({
        'success': True,
        'data': {'electionId': str(election_id), 'merkleRoot': root.to_hex()},
    })


@admin_bp.route('/<int:election_id>/merkle-root', methods=['POST'])
def publish_root(election_id):
    publication = _services().sync.publish_root(election_id)
    return jsonify({'success': True, 'data': publication.to_dict()})


@admin_bp.route('/<int:election_id>/reconcile', methods=['POST'])
def reconcile(election_id):
    report = _services().sync.reconcile(election_id)
    return jsonify({'success': True, 'data': report.to_dict()})
