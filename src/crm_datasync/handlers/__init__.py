"""
Store Handlers Package

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/handlers/__init__.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Package Initialization

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Initial package structure with Web API and
                                flat file handlers
-------------------------------------------------------------------------------
===============================================================================
"""

# Core interfaces
from .base import BaseStore, DestinationStore, QueryPage, RecordSink, SourceProvider
from .factory import HandlerFactory

# Entity service
from .webapi import WebApiConfig, WebApiSource, WebApiStore

# Flat file for offline sync
from .flat_file import (
    FlatFileConfig,
    FlatFileStore,
    deserialize_records,
    serialize_records,
)

__all__ = [
    # Core
    "BaseStore",
    "DestinationStore",
    "QueryPage",
    "RecordSink",
    "SourceProvider",
    "HandlerFactory",
    # Web API
    "WebApiConfig",
    "WebApiSource",
    "WebApiStore",
    # Flat file
    "FlatFileConfig",
    "FlatFileStore",
    "deserialize_records",
    "serialize_records",
]
