"""treemerge: concatenate the text files of a directory tree into one corpus."""

__version__ = "0.1.0"
