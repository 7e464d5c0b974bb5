import os
import sys
import argparse
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Allow running from a checkout without installing
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, PROJECT_ROOT)

from app.services.image_preprocess_service import image_preprocess_service, ImageProcessingError


def main(argv=None):
    parser = argparse.ArgumentParser(description="Prepare a skin photo the same way the scan service does.")
    parser.add_argument("input", help="Path to the source image (JPEG, PNG, WebP, ...)")
    parser.add_argument("-o", "--output", help="Where to write the JPEG (default: <input>_prepared.jpg)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    output = args.output or f"{os.path.splitext(args.input)[0]}_prepared.jpg"

    try:
        with open(args.input, "rb") as f:
            content = f.read()
        result = image_preprocess_service.process_image(content)
    except (ImageProcessingError, OSError) as e:
        print(f"Error processing {args.input}: {e}")
        return 1

    with open(output, "wb") as f:
        f.write(result.jpeg_bytes)

    width, height = result.size
    print(f"Wrote {output} ({width}x{height}, skin detected: {result.has_skin_pixels})")
    for stage, elapsed in result.execution_times.items():
        print(f"  {stage}: {elapsed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
