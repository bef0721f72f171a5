import logging
import os
from pathlib import Path
from typing import Union

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import ClientError

from huc_tools.util import unique_suffix

COPERNICUS_DEM_BUCKET = 'copernicus-dem-30m'
MISSING_KEY_ERROR_CODES = {'NoSuchKey', '404'}

S3_CLIENT = boto3.client('s3', region_name='eu-central-1', config=Config(signature_version=UNSIGNED))
log = logging.getLogger(__name__)


def download_file_from_s3(bucket: str, key: str, path: Union[str, Path]) -> bool:
    """Download an S3 object, publishing it at `path` only once it is complete

    Args:
        bucket: The S3 bucket
        key: The object key
        path: Local file to write

    Returns:
        True if the object was downloaded, False if it does not exist
    """
    path = Path(path)
    tmp_path = path.with_name(f'.{path.name}.{unique_suffix()}')

    log.debug(f'Downloading s3://{bucket}/{key}')
    try:
        response = S3_CLIENT.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if e.response['Error']['Code'] in MISSING_KEY_ERROR_CODES:
            return False
        raise

    try:
        with open(tmp_path, 'wb') as f:
            for chunk in response['Body'].iter_chunks():
                f.write(chunk)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return True
