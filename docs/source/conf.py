# Sphinx configuration for the torch-dla API reference.
import os
import sys
sys.path.insert(0, os.path.abspath('../../'))

import torch_dla

project = 'torch-dla'
copyright = '2024, walker chi'
author = 'walker chi'
release = torch_dla.__version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.mathjax',
]

# numpy-style docstrings only
napoleon_google_docstring = False
napoleon_numpy_docstring = True
autodoc_member_order = 'bysource'
autodoc_typehints = 'description'

templates_path = ['_templates']
exclude_patterns = ['setup.py', '__init__.py']

html_theme = 'furo'
html_static_path = ['_static']
html_title = 'torch-dla'
