"""File storage, reference loading and result materialisation."""

from .file_storage import LocalFileStorage
from .references import build_reference_data_urls
from .result_materializer import ResultMaterializer, decode_data_url

__all__ = [
    "LocalFileStorage",
    "ResultMaterializer",
    "build_reference_data_urls",
    "decode_data_url",
]
