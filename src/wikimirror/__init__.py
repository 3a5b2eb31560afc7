"""Static mirror of a MediaWiki site with a word search index."""

__version__ = "0.1.0"
