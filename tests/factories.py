"""Builders for upload test data."""

from upload_guard.upload.models import UploadedFile, UploadRequest

WIDGET_ID = "Form-formPost-attachments"


def make_file(
    name: str = "photo.jpg",
    size: int = 1024,
    mime_type: str = "image/jpeg",
    is_valid: bool = True,
) -> UploadedFile:
    """Build an uploaded file of ``size`` bytes."""
    return UploadedFile(
        file_name=name,
        content=(b"\xff\xd8\xff" + b"x" * size)[:size],
        mime_type=mime_type,
        is_valid=is_valid,
    )


def make_request(files=None, widget_id: str = WIDGET_ID) -> UploadRequest:
    """Build an upload postback; carries one default file unless ``files`` is given."""
    if files is None:
        files = {"file_data": make_file()}
    headers = {"X-OCTOBER-FILEUPLOAD": widget_id} if widget_id else {}
    return UploadRequest(headers=headers, files=files)
