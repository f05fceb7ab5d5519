from clipvault.utils.ids import Kind, blob_path, generate_id, parse_blob_path, text_path, validate_user_id

__all__ = ["Kind", "blob_path", "generate_id", "parse_blob_path", "text_path", "validate_user_id"]
