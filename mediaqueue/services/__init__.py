"""Services for the upload queue."""
from .compression import CompressionService
from .metadata_linker import MetadataLinker
from .metadata_repository import SupabaseMetadataRepository
from .storage import ChunkedSupabaseStorage, SupabaseStorage
from .supabase_client import SupabaseClient
from .transfer import TransferSession, TransferWorker

__all__ = [
    "CompressionService",
    "MetadataLinker",
    "SupabaseMetadataRepository",
    "ChunkedSupabaseStorage",
    "SupabaseStorage",
    "SupabaseClient",
    "TransferSession",
    "TransferWorker",
]
