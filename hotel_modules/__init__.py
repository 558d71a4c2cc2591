"""
Business modules: billing (invoices, payments), settlements, reporting.

Each module follows the same layout: ``models.py`` (frozen DTOs and enums),
``orm.py`` (persistence), ``config.py`` (typed settings) and ``service.py``
(orchestration through the kernel journal).
"""
