"""
VideoTranslator — build script.

Usage:
    # Development (editable install):
    pip install -e .

    # With test tools:
    pip install -e ".[test]"
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "VideoTranslator"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Video download, transcription, translation and subtitle burn-in pipeline",
    packages=find_namespace_packages(include=["videotranslator", "videotranslator.*"]),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
)
