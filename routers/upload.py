from fastapi import APIRouter, Depends, File, UploadFile

import models
from config import settings
from errors import ValidationError
from storage import LocalBlobStore, get_blob_store
from utils.dependencies import admin_required

router = APIRouter(prefix="/upload", tags=["Upload"])


async def _read_limited(upload: UploadFile) -> bytes:
    data = await upload.read(settings.max_upload_size + 1)
    if len(data) > settings.max_upload_size:
        raise ValidationError(f"File exceeds the {settings.max_upload_size} byte upload limit")
    if not data:
        raise ValidationError("Uploaded file is empty")
    return data


@router.post("/image", response_model=models.UploadResponse)
async def upload_image(image: UploadFile = File(None), admin=Depends(admin_required),
                       store: LocalBlobStore = Depends(get_blob_store)):
    if image is None:
        raise ValidationError("No image file uploaded")
    if not (image.content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed")

    data = await _read_limited(image)
    filename = store.make_filename("image", image.filename)
    url = await store.save("", filename, data)
    return models.UploadResponse(message="Image uploaded successfully", filename=filename, url=url)


@router.post("/pdf", response_model=models.UploadResponse)
async def upload_pdf(pdf: UploadFile = File(None), admin=Depends(admin_required),
                     store: LocalBlobStore = Depends(get_blob_store)):
    if pdf is None:
        raise ValidationError("No PDF file uploaded")
    if pdf.content_type != "application/pdf":
        raise ValidationError("Only PDF files are allowed")

    data = await _read_limited(pdf)
    filename = store.make_filename("pdf", pdf.filename)
    url = await store.save("pdfs", filename, data)
    return models.UploadResponse(message="PDF uploaded successfully", filename=filename, url=url)
