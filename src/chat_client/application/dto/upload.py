from __future__ import annotations

from dataclasses import dataclass

from chat_client.application.exceptions import UploadError


@dataclass(frozen=True, slots=True)
class ImageUpload:
    filename: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    def validate(self, max_bytes: int) -> None:
        """Raise UploadError unless this is an image within ``max_bytes``."""
        if not self.content_type.startswith("image/"):
            raise UploadError("Only image files are allowed")
        if self.size > max_bytes:
            raise UploadError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
        if not self.content:
            raise UploadError("Image file is empty")
