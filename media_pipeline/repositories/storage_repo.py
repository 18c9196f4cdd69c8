"""Cloud Storage accessors for job inputs and artifacts."""


def get_blob(bucket, path):
    """Return the blob with its metadata loaded, or None when it does not exist."""
    return bucket.get_blob(path)


def blob_exists(bucket, path):
    return bucket.blob(path).exists()


def download_to_file(bucket, path, local_path):
    bucket.blob(path).download_to_filename(local_path)
    return local_path


def download_bytes(bucket, path):
    return bucket.blob(path).download_as_bytes()


def download_text(bucket, path):
    return bucket.blob(path).download_as_text(encoding='utf-8')


def upload_text(bucket, path, text, *, content_type='text/markdown', metadata=None):
    blob = bucket.blob(path)
    if metadata:
        blob.metadata = dict(metadata)
    blob.upload_from_string(text.encode('utf-8'), content_type=f'{content_type}; charset=utf-8')
    return path


def list_blobs(bucket, prefix):
    return list(bucket.list_blobs(prefix=prefix))


def copy_blob(bucket, source_path, destination_path):
    source = bucket.blob(source_path)
    bucket.copy_blob(source, bucket, destination_path)
    return destination_path


def gcs_uri(bucket, path):
    return f'gs://{bucket.name}/{path}'
