"""Conversational diary: chat, classification, reports and storage."""
