"""Reset and create the quickstart index."""
import logging
from dataclasses import dataclass

from elasticsearch import AsyncElasticsearch, NotFoundError

from search_quickstart.data_files import IndexDefinition
from search_quickstart.errors import SERVICE_EXCEPTIONS, from_transport_error
from search_quickstart.schema import IndexSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexHandle:
    """A created index: its name and the schema used to build queries against it."""

    name: str
    schema: IndexSchema


async def delete_index_if_exists(client: AsyncElasticsearch, name: str) -> bool:
    """Delete the index. A missing index is not an error: print a note and return False."""
    try:
        await client.indices.delete(index=name)
    except NotFoundError:
        print("Index does not exist yet.")
        return False
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(f"delete index {name!r}", e) from e
    print("Deleting index...")
    return True


async def create_index(client: AsyncElasticsearch, definition: IndexDefinition) -> IndexHandle:
    """Create the index from its definition. Invalid definitions and service errors propagate."""
    schema = IndexSchema.from_definition(definition)
    logger.debug("Creating index %s with mappings %s", schema.name, schema.mappings)
    try:
        await client.indices.create(index=schema.name, mappings=schema.mappings)
    except SERVICE_EXCEPTIONS as e:
        raise from_transport_error(f"create index {schema.name!r}", e) from e
    return IndexHandle(name=schema.name, schema=schema)
