# Sphinx configuration for the LedgerSync API reference.
#
# Build with:
#   sphinx-build -b html docs/source docs/build/html
#   sphinx-build -b markdown docs/source docs/build/markdown

import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT))

import LedgerSync  # noqa: E402

# -- Project information -----------------------------------------------------

project = 'LedgerSync'
author = LedgerSync.__author__
copyright = LedgerSync.__copyright__.removeprefix('Copyright (C) ')
version = LedgerSync.__version__
release = LedgerSync.__version__

# -- General configuration ---------------------------------------------------

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_markdown_builder',
]

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pandas': ('https://pandas.pydata.org/docs', None),
}

# Google style docstrings with Args/Returns/Raises sections
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_use_rtype = False

# SyncAPI and the monitors document their arguments on __init__
autoclass_content = 'both'
autodoc_member_order = 'bysource'
autodoc_typehints = 'description'
autodoc_default_options = {
    'members': True,
    'show-inheritance': True,
}

exclude_patterns = ['_build']

# -- Options for HTML output -------------------------------------------------

html_theme = 'furo'
html_title = f'LedgerSync {release}'
html_theme_options = {
    'source_repository': LedgerSync.__url__,
    'source_branch': 'main',
    'source_directory': 'docs/source/',
}
