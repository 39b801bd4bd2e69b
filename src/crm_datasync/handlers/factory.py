"""
Handler Factory - Creates store handlers from run configuration

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/handlers/factory.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Handler factory mapping endpoint kinds to
                                source and destination handlers.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from typing import Callable, Dict, Optional, Union

from ..config import Endpoint, EndpointKind, RunConfig
from ..errors import InvalidConfiguration
from .base import DestinationStore, RecordSink, SourceProvider
from .flat_file import FlatFileConfig, FlatFileStore
from .webapi import WebApiConfig, WebApiSource, WebApiStore


def _file_store(endpoint: Endpoint) -> FlatFileStore:
    return FlatFileStore(FlatFileConfig(path=endpoint.location, password=endpoint.password))


def _server_store(endpoint: Endpoint) -> WebApiStore:
    return WebApiStore(WebApiConfig.from_connection_string(endpoint.location))


class HandlerFactory:
    """
    Factory for creating store handlers.

    Maps endpoint kinds to handler builders. Additional kinds can be
    registered at runtime.
    """

    SOURCE_TYPES: Dict[EndpointKind, Callable[[Endpoint, Optional[str]], SourceProvider]] = {
        EndpointKind.SERVER: lambda endpoint, query: WebApiSource(_server_store(endpoint), query or ""),
        EndpointKind.FILE: lambda endpoint, query: _file_store(endpoint),
    }

    DESTINATION_TYPES: Dict[EndpointKind, Callable[[Endpoint], Union[DestinationStore, RecordSink]]] = {
        EndpointKind.SERVER: _server_store,
        EndpointKind.FILE: _file_store,
    }

    @classmethod
    def create_source(cls, config: RunConfig) -> SourceProvider:
        """
        Create the source handler for a run.

        Raises:
            InvalidConfiguration: If the source kind is not registered
        """
        builder = cls.SOURCE_TYPES.get(config.source.kind)
        if builder is None:
            raise InvalidConfiguration(f"Unknown source type: {config.source.kind}")
        return builder(config.source, config.query)

    @classmethod
    def create_destination(cls, config: RunConfig) -> Union[DestinationStore, RecordSink]:
        """
        Create the destination handler for a run.

        Raises:
            InvalidConfiguration: If the destination kind is not registered
        """
        builder = cls.DESTINATION_TYPES.get(config.destination.kind)
        if builder is None:
            raise InvalidConfiguration(f"Unknown destination type: {config.destination.kind}")
        return builder(config.destination)

    @classmethod
    def get_supported_types(cls) -> list:
        """Get list of supported endpoint kinds"""
        return [kind.value for kind in cls.DESTINATION_TYPES]

    @classmethod
    def register_destination(cls, kind: EndpointKind,
                             builder: Callable[[Endpoint], Union[DestinationStore, RecordSink]]):
        """
        Register a destination builder.

        Args:
            kind: Endpoint kind
            builder: Callable creating a handler from an Endpoint
        """
        cls.DESTINATION_TYPES[kind] = builder
