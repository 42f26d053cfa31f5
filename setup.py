#!/usr/bin/env python3
"""
passagepipe - resumable, device-parallel batch inference over document collections

Splits documents into token-bounded prompt units, runs them through local
language models on a pool of devices and writes the results to JSON lines,
reassembled markdown or a vector index, checkpointing after every batch.
"""

import os
from setuptools import setup, find_packages

# Read the README for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return ""

# Core dependencies
INSTALL_REQUIRES = [
    "torch>=2.0.0",
    "numpy>=1.21.0",
    "transformers>=4.44.0",
    "sentence-transformers>=2.2.0",
    "faiss-cpu>=1.7.0",
    "tqdm>=4.65.0",
    "PyYAML>=6.0",
]

# Optional dependencies
EXTRAS_REQUIRE = {
    "gpu": [
        "bitsandbytes>=0.43.0",
        "accelerate>=0.20.0",
    ],
    "dev": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "black>=23.0.0",
        "isort>=5.12.0",
        "flake8>=6.0.0",
        "mypy>=1.0.0",
    ],
}

# Combined 'all' extra
EXTRAS_REQUIRE["all"] = (
    EXTRAS_REQUIRE["gpu"] +
    EXTRAS_REQUIRE["dev"]
)

setup(
    name="passagepipe",
    version="0.3.0",
    author="passagepipe Authors",
    author_email="",
    description="Resumable, device-parallel batch inference over document collections",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    license="Apache-2.0",

    # Package discovery
    package_dir={"": "src"},
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),

    # Include non-Python files
    include_package_data=True,
    package_data={
        "passagepipe": ["config.yaml.example"],
    },

    # Dependencies
    python_requires=">=3.9",
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,

    # Entry points for CLI commands
    entry_points={
        "console_scripts": [
            "passagepipe=passagepipe.run_passagepipe:main",
        ],
    },

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Linguistic",
    ],

    # Keywords for PyPI search
    keywords=[
        "llm",
        "batch-inference",
        "translation",
        "text-splitting",
        "checkpointing",
        "vector-index",
        "nlp",
    ],
)
