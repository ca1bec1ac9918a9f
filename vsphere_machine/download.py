"""
Boot image download.

The image is streamed into a temporary file in the destination directory and
renamed into place only once it is complete, so the final path never holds a
partial download.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

import requests
from tqdm import tqdm

from vsphere_machine.errors import FilesystemError, NetworkError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def fetch_image(destination_dir: Union[str, Path], file_name: str, source_url: str,
                progress: bool = False) -> Path:
    """
    Download source_url to destination_dir/file_name atomically.

    Args:
        destination_dir: Directory that receives the file (created if missing)
        file_name: Final file name inside destination_dir
        source_url: HTTP(S) URL of the image
        progress: Show a tqdm progress bar while downloading

    Returns:
        Path of the downloaded file

    Raises:
        NetworkError: The request failed or returned an error status
        FilesystemError: The file could not be written or moved into place
    """
    destination_dir = Path(destination_dir)
    destination = destination_dir / file_name

    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{file_name}.tmp-", dir=str(destination_dir))
    except OSError as e:
        raise FilesystemError(f"Cannot prepare {destination_dir} for download: {e}") from e

    renamed = False
    try:
        logger.debug(f"Downloading {source_url} to {tmp_name}")
        with os.fdopen(fd, 'wb') as handle:
            _stream_to(handle, source_url, file_name, progress)
        os.replace(tmp_name, destination)
        renamed = True
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Failed to download {source_url}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Failed to write {destination}: {e}") from e
    finally:
        if not renamed:
            _discard(tmp_name)

    logger.info(f"Downloaded {file_name} to {destination_dir}")
    return destination


def _stream_to(handle, source_url: str, file_name: str, progress: bool) -> None:
    with requests.get(source_url, stream=True) as response:
        response.raise_for_status()
        total_size = int(response.headers.get('content-length', 0) or 0)
        with tqdm(total=total_size, unit='B', unit_scale=True, desc=file_name,
                  disable=not progress) as pbar:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    handle.write(chunk)
                    pbar.update(len(chunk))


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass
