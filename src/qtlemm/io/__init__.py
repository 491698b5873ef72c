"""I/O modules for QTLEMM.

This package contains readers and writers for the whitespace-delimited text
formats used by the command-line interface:
- text: marker/QTL tables, genotypes, phenotypes, design matrices, and
  Q-matrix, cp-matrix and EM result writers
"""

from qtlemm.io.text import (
    read_design_matrix,
    read_genotypes,
    read_locus_table,
    read_numeric_table,
    read_phenotypes,
    write_cp_matrix,
    write_em_result,
    write_q_matrices,
)

__all__ = [
    "read_design_matrix",
    "read_genotypes",
    "read_locus_table",
    "read_numeric_table",
    "read_phenotypes",
    "write_cp_matrix",
    "write_em_result",
    "write_q_matrices",
]
