from abc import ABC, abstractmethod


class ProofStorage(ABC):
    @abstractmethod
    def save_proof(self, submission_key: str, filename: str, content: bytes) -> str:
        """Store an uploaded payment screenshot; returns the proof reference kept on the submission."""
        raise NotImplementedError

    @abstractmethod
    def delete_proof(self, proof_ref: str) -> bool:
        """Remove a stored proof. False if the reference is not ours or already gone."""
        raise NotImplementedError
