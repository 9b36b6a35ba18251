"""Error taxonomy shared by every HashIt flow.

Each error carries the flow step it originated from (if any) so callers can
tell "already registered by someone else" from "wrong secret" from
"network issue" without parsing message text.
"""
from typing import Optional


class HashItError(Exception):
    """Base class for all HashIt errors."""

    default_message = 'HashIt operation failed'

    def __init__(self, message: Optional[str] = None, step=None):
        self.message = message or self.default_message
        self.step = step
        super().__init__(self.message)

    def __str__(self):
        if self.step is None:
            return self.message
        return f'[{getattr(self.step, "value", self.step)}] {self.message}'


class InputError(HashItError):
    """Missing or malformed caller input; raised before any external call."""

    default_message = 'Invalid input'


class BindingModeError(InputError):
    default_message = 'Operation is not available in this binding mode'


class DuplicateDocumentError(HashItError):
    default_message = 'This exact file has already been registered'

    def __init__(self, existing_owner: Optional[str] = None, message: Optional[str] = None, step=None):
        self.existing_owner = existing_owner
        if message is None and existing_owner:
            message = f'This exact file has already been registered by: {existing_owner}'
        super().__init__(message, step=step)


class NotRegisteredError(HashItError):
    default_message = 'This file has not been registered'


class SecretMismatchError(HashItError):
    default_message = 'The file is registered, but the secret key is wrong'


class ProofGenerationError(HashItError):
    default_message = 'Commitment proof generation failed'


class NetworkUnavailableError(HashItError):
    default_message = 'Storage or registry is unreachable'


class AuthenticationError(HashItError):
    default_message = 'Decryption failed. The provided password may be incorrect'


class NotFoundError(HashItError):
    default_message = 'Content not available from reachable peers'


class FlowCancelledError(HashItError):
    default_message = 'Flow cancelled by caller'
