from .crypto import FieldCipher, generate_key
from .pipeline import FieldBehaviorPipeline
from .transforms import hash_password, verify_password

__all__ = ["FieldBehaviorPipeline", "FieldCipher", "generate_key", "hash_password", "verify_password"]
