import os

# Unit tests never send traces
os.environ.setdefault("OPIK_TRACK_DISABLE", "true")
