import os
import urllib.parse as urlparse
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
import sqlalchemy as sa

from atlas_ingest.runtime_utils.process_logger import ProcessLogger

from .atlas_schema import SqlBase

# environment variables for the atlas database all start with this prefix
ATLAS_DB_PREFIX = "ATLAS"

PRODUCTION_SCHEMA = "gtfs"
STAGING_SCHEMA = "gtfs_stage"


def running_in_docker() -> bool:
    """
    return true if running inside of a docker container
    """
    path = "/proc/self/cgroup"
    if os.path.exists("/.dockerenv"):
        return True
    if not os.path.isfile(path):
        return False
    with open(path, encoding="UTF-8") as cgroup:
        return any("docker" in line for line in cgroup)


def environ_get(var_name: str) -> str:
    """
    get an environment variable, raising an error if it does not exist. this
    utility helps with type checking.
    """
    value = os.environ.get(var_name)
    if value is None:
        raise KeyError(f"Unable to find {var_name} in environment")
    return value


def schema_name(is_prod: bool) -> str:
    """schema every table is written to for this run"""
    if is_prod:
        return PRODUCTION_SCHEMA
    return STAGING_SCHEMA


class PsqlArgs:
    """
    container class for arguments needed to log into postgres db
    """

    def __init__(self, prefix: str = ATLAS_DB_PREFIX):
        self.host: str = environ_get(f"{prefix}_DB_HOST")

        self.port: str
        if running_in_docker():
            # running in docker, use the default port for postgres
            self.port = "5432"
        else:
            # running on the command line, use the forwarded port out of the
            #   container
            # OR
            # running on aws, use the env var for the the aws rds instance
            self.port = environ_get(f"{prefix}_DB_PORT")

        self.name: str = environ_get(f"{prefix}_DB_NAME")
        self.user: str = environ_get(f"{prefix}_DB_USER")
        self.password: Optional[str] = os.environ.get(f"{prefix}_DB_PASSWORD")

    def get_password(self) -> str:
        """
        function to provide rds password

        used to refresh auth token, if required
        """
        if self.password is not None:
            return self.password

        region = os.environ.get("DB_REGION", None)

        # generate ws db auth token if in rds
        client = boto3.client("rds")
        return client.generate_db_auth_token(
            DBHostname=self.host,
            Port=self.port,
            DBUsername=self.user,
            Region=region,
        )

    def database_url(self) -> str:
        """
        connection url for the database. a missing password means a cloud
        database with generated auth tokens, which requires ssl.
        """
        db_ssl_options = ""
        db_password = self.password
        if db_password is None:
            db_password = urlparse.quote_plus(self.get_password())
            db_ssl_options = "?sslmode=require"

        return (
            f"postgresql+psycopg2://{self.user}:"
            f"{db_password}@{self.host}:{self.port}/{self.name}"
            f"{db_ssl_options}"
        )

    def get_engine(
        self,
        pool_size: int,
        target_schema: str,
        pool_timeout: float = 30.0,
        echo: bool = False,
    ) -> sa.engine.Engine:
        """
        create an engine whose connection pool holds exactly one connection
        per worker. tables without a schema are mapped onto target_schema.
        """
        process_logger = ProcessLogger(
            "create_sql_engine",
            pool_size=pool_size,
            target_schema=target_schema,
        )
        process_logger.log_start()
        try:
            process_logger.add_metadata(**self.metadata())

            engine = sa.create_engine(
                self.database_url(),
                echo=echo,
                pool_pre_ping=True,
                pool_use_lifo=True,
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout,
                connect_args={
                    "keepalives": 1,
                    "keepalives_idle": 60,
                    "keepalives_interval": 60,
                },
                execution_options={"schema_translate_map": {None: target_schema}},
            )

            sa.event.listen(
                engine,
                "do_connect",
                generate_update_db_password_func(self),
            )

            process_logger.log_complete()
            return engine
        except Exception as exception:
            process_logger.log_failure(exception)
            raise exception

    def metadata(self) -> Dict[str, str]:
        """
        generate a dict to add to logs for psql connection details
        """
        return {
            "host": self.host,
            "database_name": self.name,
            "user": self.user,
            "port": self.port,
        }


def generate_update_db_password_func(psql_args: PsqlArgs) -> Callable:
    """
    create a function to update the password for a database when a new
    connection is created
    """

    def postgres_event_update_db_password(
        _: sa.engine.interfaces.Dialect,
        __: Any,
        ___: Tuple[Any, ...],
        cparams: Dict[str, Any],
    ) -> None:
        """
        update database password on every new connection attempt
        this will refresh db auth token passwords
        """
        process_logger = ProcessLogger("password_refresh")
        process_logger.log_start()
        cparams["password"] = psql_args.get_password()
        process_logger.log_complete()

    return postgres_event_update_db_password


def create_tables(engine: sa.engine.Engine, target_schema: str) -> None:
    """
    create the target schema, required extensions and every table that does
    not exist yet. meant for local development databases, deployed databases
    are managed outside of this package.
    """
    process_logger = ProcessLogger("create_tables", target_schema=target_schema)
    process_logger.log_start()

    with engine.begin() as connection:
        connection.execute(sa.text("CREATE EXTENSION IF NOT EXISTS postgis;"))
        connection.execute(sa.text("CREATE EXTENSION IF NOT EXISTS hstore;"))
        connection.execute(sa.text(f'CREATE SCHEMA IF NOT EXISTS "{target_schema}";'))
        SqlBase.metadata.create_all(connection)

    process_logger.log_complete()
