from app.lib.responses.codecs import decode_headers, encode_headers

__all__ = ["decode_headers", "encode_headers"]
