"""
FastAPI Application Package

This package contains the FastAPI application, its routes and the HTTP
error boundary that renders every failure as an error envelope.
"""
