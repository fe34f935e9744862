"""
Google Sheets v4 integration for the proxy endpoints.

Includes an in-memory spreadsheet for local development without
service-account credentials.
"""
