"""
passagepipe from a Config File
==============================

Load settings from config.yaml and override a few of them in code.

Prerequisites:
    pip install passagepipe
    passagepipe --init-config      # writes ./config.yaml to edit

Usage:
    python 02_from_config_file.py
"""

from passagepipe import PassagePipe

# ---------------------------------------------------------------------------
# Keyword decoration into the vector index
# ---------------------------------------------------------------------------
# Overlapping prompt units, one keyword list per unit, stored together with
# the passage in output/index (FAISS + passages.jsonl).

pipeline = (
    PassagePipe.from_config("config.yaml", task="decorate")
    .configure(item_limit=10, batch_size=4)
)

print(pipeline)
results = pipeline.run()
print(f"Processed {results.documents_processed} documents "
      f"in {results.batches_processed} batches")

# Start from scratch next time
# pipeline.reset()
