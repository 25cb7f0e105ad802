"""Instructions sent to Gemini alongside each batch."""

from __future__ import annotations

SYSTEM_INSTRUCTION = """\
You are an expert in mathematical LaTeX and JSON formatting.
You receive a JSON array of knowledge points about optimization algorithms. Clean up
and standardise the "name" and "description" field of every object.

Follow these rules strictly:
1. Math wrapping: find every bare mathematical variable (such as x, A, b, w, L, n, m, i)
   and expression (such as Ax=b, f(x), x in X) and wrap it in dollar signs $...$.
2. Formula merging: merge adjacent math segments into one. For example "$\\min$ $f(x)$"
   becomes "$\\min f(x)$" and "$\\in$ $\\mathbb{R}^n$" becomes "$\\in \\mathbb{R}^n$".
3. Escaping: write LaTeX commands so that they survive JSON encoding, i.e. the JSON
   text must contain double backslashes such as \\\\min, \\\\mathbb{R}, \\\\in,
   \\\\text{s.t.}, \\\\to, \\\\le.
4. Output: return a JSON array. Every object must carry the "_index" of the input object
   it corresponds to, plus the processed "name" and "description". Do not add, drop or
   renumber objects.

Example input:
[{"_index": 0, "name": "Gradient descent", "description": "a method for solving min f(x)"}]

Example output:
[{"_index": 0, "name": "Gradient descent", "description": "a method for solving $\\\\min f(x)$"}]
"""

USER_INSTRUCTION = (
    "Process the following JSON array. Return the JSON array directly, without Markdown "
    "formatting."
)
