"""
Configuration settings for the Dermatolog Skin Scan preprocessing service.
Contains pipeline policy constants and operational limits.
"""
import os


# --- Resize ---

# Longest edge of the image sent to the analysis model.
# Smaller images are not upscaled.
MAX_DIMENSION = 512


# --- Skin Segmentation (YCbCr chrominance test) ---

# Inclusive Cb / Cr bounds for a pixel to count as skin.
# Empirically tuned across skin tones; keep these exact so output stays
# compatible with previously processed scans.
SKIN_CB_RANGE = (77, 127)
SKIN_CR_RANGE = (133, 173)


# --- Composite & Encode ---

# Opaque canvas that non-skin pixels are replaced with.
# White is safer for vision models than transparency, which often reads as black.
BACKGROUND_COLOR = (255, 255, 255)

# Lossy quality on a 0.0 - 1.0 scale (Pillow uses 1 - 95, so 0.90 -> 90).
JPEG_QUALITY = 0.90

OUTPUT_MIME_TYPE = "image/jpeg"


# --- Operational Limits (overridable from the environment / .env) ---

# Refuse to decode anything above this many megapixels.
MAX_DECODE_MEGAPIXELS = float(os.environ.get("MAX_DECODE_MEGAPIXELS", "40"))
MAX_DECODE_PIXELS = int(MAX_DECODE_MEGAPIXELS * 1_000_000)

# Largest upload accepted by the HTTP endpoints, in bytes.
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
