from .json_extractor import extract_json_from_text, extract_json_safely, strip_think_blocks

__all__ = ["extract_json_from_text", "extract_json_safely", "strip_think_blocks"]
