"""Dance school administration package.

Organized by feature modules (students, attendance, payments, holidays, ...)
with a thin Flask controller layer over service/repository layers.
"""
