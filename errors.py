"""
Error kinds for the voter registry and Merkle-proof subsystem.

Every failure a registry or proof consumer can observe is one of the classes
below. Each carries a stable ``kind`` string (used on the wire) and the HTTP
status the API layer answers with.
"""

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """Base exception for registry and proof operations"""

    kind = "RegistryError"
    http_status = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': self.message}


class InvalidFieldElement(RegistryError):
    """Hash input not in [0, p)"""
    kind = "InvalidFieldElement"
    http_status = 400


class IdentifierOutOfRange(RegistryError):
    """Voter identifier is not a 32-byte value below the field prime"""
    kind = "IdentifierOutOfRange"
    http_status = 400


class EmptyLeafSet(RegistryError):
    """No root is defined for zero leaves"""
    kind = "EmptyLeafSet"
    http_status = 400


class NoRegistryForElection(RegistryError):
    kind = "NoRegistryForElection"
    http_status = 404


class NotRegistered(RegistryError):
    kind = "NotRegistered"
    http_status = 404


class RootMismatch(RegistryError):
    """Rebuilt root differs from the authoritative on-chain root"""
    kind = "RootMismatch"
    http_status = 409


class ReconciliationFault(RegistryError):
    """On-chain state is ahead of the mirror store"""
    kind = "ReconciliationFault"
    http_status = 500

    def __init__(self, message: str = "", election_id: Optional[int] = None,
                 transaction_hash: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.election_id = election_id
        self.transaction_hash = transaction_hash


class ChainTransactionFailed(RegistryError):
    """Transaction reverted or was rejected by the node"""
    kind = "ChainTransactionFailed"
    http_status = 502

    def __init__(self, message: str = "", revert_reason: Optional[str] = None,
                 transaction_hash: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.revert_reason = revert_reason
        self.transaction_hash = transaction_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.revert_reason:
            data['revertReason'] = self.revert_reason
        if self.transaction_hash:
            data['transactionHash'] = self.transaction_hash
        return data


class ChainUnavailable(RegistryError):
    """Node unreachable or RPC failure; a sent transaction may still confirm"""
    kind = "ChainUnavailable"
    http_status = 503

    def __init__(self, message: str = "", transaction_hash: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.transaction_hash = transaction_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.transaction_hash:
            data['transactionHash'] = self.transaction_hash
        return data


ERROR_KINDS = {
    cls.kind: cls for cls in (
        InvalidFieldElement,
        IdentifierOutOfRange,
        EmptyLeafSet,
        NoRegistryForElection,
        NotRegistered,
        RootMismatch,
        ReconciliationFault,
        ChainTransactionFailed,
        ChainUnavailable,
    )
}
