"""
AI Task Router.

Routes tasks to generative-model providers under sliding-window quotas,
with oracle-assisted selection and bounded fallback.
"""

__version__ = "0.1.0"
