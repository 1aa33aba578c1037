import logging
import os
import re
import time
from pathlib import Path
from uuid import uuid4

from lawnet.core.config import settings
from lawnet.core.errors import ValidationError
from lawnet.storage.base import ProofStorage

logger = logging.getLogger(__name__)

PROOF_URL_PREFIX = "/uploads/submissions/"

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class LocalProofStorage(ProofStorage):
    """Payment screenshots on local disk. Proof refs look like /uploads/submissions/<file>."""

    def __init__(self, root: str | None = None) -> None:
        self.root = Path(root or settings.proof_upload_dir).resolve()

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def validate(filename: str, content: bytes) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in settings.allowed_extensions_set:
            raise ValidationError(
                "Unsupported proof file type",
                detail={"extension": ext, "allowed": sorted(settings.allowed_extensions_set)},
            )
        if not content:
            raise ValidationError("Proof file is empty")
        if len(content) > settings.max_proof_size_mb * 1024 * 1024:
            raise ValidationError(
                "Proof file too large",
                detail={"max_mb": settings.max_proof_size_mb},
            )
        return ext

    def save_proof(self, submission_key: str, filename: str, content: bytes) -> str:
        ext = self.validate(filename, content)
        self._ensure_root()
        stem = _SAFE_NAME.sub("_", submission_key)[:40] or "proof"
        name = f"{int(time.time() * 1000)}-{stem}-{uuid4().hex[:8]}{ext}"
        path = self.root / name
        path.write_bytes(content)
        logger.info("proof_saved", extra={"path": str(path)})
        return f"{PROOF_URL_PREFIX}{name}"

    def path_for(self, proof_ref: str) -> Path | None:
        """Absolute path for one of our refs, None for external URLs or anything escaping the root."""
        if not proof_ref or not proof_ref.startswith(PROOF_URL_PREFIX):
            return None
        candidate = (self.root / proof_ref[len(PROOF_URL_PREFIX):]).resolve()
        if candidate.parent != self.root:
            return None
        return candidate

    def delete_proof(self, proof_ref: str) -> bool:
        path = self.path_for(proof_ref)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("proof_delete_failed", extra={"path": str(path), "error": str(e)})
            return False
        return True
