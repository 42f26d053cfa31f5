"""
passagepipe Quick Start Example
===============================

Translate a folder of markdown documents with a local model.

Prerequisites:
    pip install passagepipe
    A local causal LM (e.g. models/llama3-8b) with its tokenizer

Usage:
    python 01_quick_start.py
"""

from passagepipe import PassagePipe

# ---------------------------------------------------------------------------
# Step 1: Create a pipeline
# ---------------------------------------------------------------------------
# Point passagepipe at your documents and pick a task.

pipeline = PassagePipe(
    input_dir="data/to_translate",         # Folder with .txt / .md files
    output_dir="output/translated",        # Where results will be saved
    checkpoint_file="output/translated/progress.json",
    task="translate",                      # "prompt", "translate" or "decorate"
    llm_model="models/llama3-8b",          # Local directory or HuggingFace name
    device_count=2,                        # One model instance per device
    gpus=[0, 1],                           # Unusable GPUs fall back to CPU
    keep_results=True,                     # Keep per-document results in memory
)

# ---------------------------------------------------------------------------
# Step 2: Run the pipeline
# ---------------------------------------------------------------------------
# This will:
#   1. Split every document into prompt units of at most 450 tokens
#   2. Run each unit through the model, two documents at a time
#   3. Write <name>.jsonl and <name>_translated.md per document
#   4. Save progress after every batch (run it again to resume)

results = pipeline.run()

# ---------------------------------------------------------------------------
# Step 3: Look at the results
# ---------------------------------------------------------------------------

print(f"\n{results}\n")

for doc_result in results:
    status = "ok" if doc_result.ok else f"{doc_result.failed_units} failed units"
    print(f"{doc_result.name}: {len(doc_result.results)} units ({status})")

results.save()
