"""bookpress: build, check and publish Markdown books with executable code chunks."""

__version__ = "0.3.0"

__all__ = ["__version__"]
