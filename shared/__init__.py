"""Shared configuration package."""
