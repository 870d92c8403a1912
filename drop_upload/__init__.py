"""Drop Uploader: watch a folder and upload matching files to object storage.

Each matching file is uploaded once with an only-if-absent put, then
deleted locally.  Failed uploads rotate to the back of a round-robin
queue; name collisions are settled by comparing content checksums.
"""

__version__ = "1.0.0"
__app_name__ = "Drop Uploader"
