import os

# Keep test runs off real databases, buckets and the local uploads directory.
os.environ.setdefault("USE_IN_MEMORY_BACKENDS", "true")
os.environ.setdefault("PHOTO_STORAGE", "memory")
