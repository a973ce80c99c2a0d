"""
Casebook case-management service: bulk client importer.
"""
