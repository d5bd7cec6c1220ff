"""
In-memory, write-once/read-once store of secret plaintext.

Contents live only in process memory: a restart loses every unread secret,
while the ledger keeps the metadata.
"""
import logging
import secrets
import threading
from typing import Dict

from exceptions import SecretNotFoundError

# Configure logging
logger = logging.getLogger(__name__)

TOKEN_BYTES = 16

class SecretVault:
    """Map of opaque token -> plaintext with atomic take."""
    
    def __init__(self):
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()
    
    def put(self, plaintext: str) -> str:
        """
        Store a secret under a fresh token.
        
        Args:
            plaintext: Secret content
            
        Returns:
            Hex token (128 bits of randomness)
        """
        with self._lock:
            token = secrets.token_hex(TOKEN_BYTES)
            while token in self._entries:
                logger.warning("Token collision in vault, drawing a new token")
                token = secrets.token_hex(TOKEN_BYTES)
            self._entries[token] = plaintext
        
        logger.info("Stored secret %s...", token[:8])
        return token
    
    def take(self, token: str) -> str:
        """
        Remove and return the secret stored under token.
        
        Exactly one of several concurrent callers on the same token succeeds.
        
        Raises:
            SecretNotFoundError: If the token is not in the vault
        """
        with self._lock:
            plaintext = self._entries.pop(token, None)
        
        if plaintext is None:
            raise SecretNotFoundError("Secret not found")
        
        logger.info("Secret %s... taken from vault", token[:8])
        return plaintext
    
    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._entries
    
    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
