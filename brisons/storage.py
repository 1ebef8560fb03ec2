import hashlib
import os

from flask import current_app
from werkzeug.utils import secure_filename

from .db import utc_now
from .errors import StorageError, ValidationError


def allowed_file(filename, allowed):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in allowed


class ImageStore:
    """Stores uploaded files on local disk and hands back a durable URL.

    ``storage_id`` is opaque to callers; it is the path relative to the
    upload root and is what ``destroy`` expects.
    """

    def __init__(self, root, url_prefix, allowed):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        self.allowed = set(allowed)

    def upload(self, file, folder, allowed=None):
        if not file or not file.filename:
            raise ValidationError("No file provided")
        allowed = set(allowed) if allowed is not None else self.allowed
        if not allowed_file(file.filename, allowed):
            raise ValidationError(
                "Unsupported file type: %s (allowed: %s)" % (file.filename, ", ".join(sorted(allowed)))
            )

        # Generate a unique filename using hash of original name and timestamp
        filename = secure_filename(file.filename)
        name, ext = os.path.splitext(filename)
        hash_name = hashlib.md5(f"{name}{utc_now().isoformat()}{os.urandom(4).hex()}".encode()).hexdigest()
        storage_id = f"{secure_filename(folder)}/{hash_name}{ext.lower()}"

        target = os.path.join(self.root, storage_id)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            file.save(target)
        except OSError as e:
            raise StorageError(f"Could not store {filename}: {e}")
        return {"url": f"{self.url_prefix}/{storage_id}", "storage_id": storage_id}

    def destroy(self, storage_id):
        if not storage_id:
            return False
        path = os.path.normpath(os.path.join(self.root, storage_id))
        if not path.startswith(os.path.normpath(self.root) + os.sep):
            raise ValidationError("Invalid storage id")
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Could not delete {storage_id}: {e}")
        return True


def get_store():
    return current_app.extensions["image_store"]
