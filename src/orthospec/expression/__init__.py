"""
Expression input model.

Holds normalized, replicate-resolved expression and its group assignment.
"""

from orthospec.expression.matrix import ExpressionMatrix

__all__ = ["ExpressionMatrix"]
