#!/usr/bin/env python3
"""
CLI tool for the Package Manager
Provides kubectl-like interface for managing packages and their revisions
"""

import asyncio
import json

import asyncpg
import click
import yaml
from tabulate import tabulate

from conditions import ConditionType
from config import DatabaseConfig
from errors import NotFoundError
from manifests import ImageConfigManifest, PackageManifest, parse_manifest
from models import ANNOTATION_PAUSED, DesiredState
from store import PackageStore


class PackageManagerCLI:
    """CLI client that talks to the package store directly"""

    def __init__(self, db_config: DatabaseConfig = None):
        self.db_config = db_config

    def _store(self) -> PackageStore:
        db_config = self.db_config or DatabaseConfig.from_env()
        return PackageStore(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=1,
            max_pool_size=2,
        )

    def run(self, operation):
        """Run ``operation(store)`` against a connected store"""

        async def _run():
            store = self._store()
            await store.connect()
            try:
                return await operation(store)
            finally:
                await store.close()

        try:
            return asyncio.run(_run())
        except (NotFoundError, ValueError) as e:
            raise click.ClickException(str(e)) from e
        except (asyncpg.PostgresError, OSError) as e:
            raise click.ClickException(f"database error: {e}") from e


def load_documents(filename):
    """Read one or more manifests from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return [doc for doc in yaml.safe_load_all(f) if doc is not None]
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def render(data, output):
    if output == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    else:
        click.echo(json.dumps(data, indent=2))


@click.group()
@click.pass_context
def cli(ctx):
    """Package Manager CLI - kubectl-like interface for packages"""
    ctx.ensure_object(PackageManagerCLI)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def apply(client, filename):
    """Apply Package and ImageConfig manifests from a YAML/JSON file"""
    try:
        manifests = [parse_manifest(doc) for doc in load_documents(filename)]
    except (ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"invalid manifest: {e}") from e

    async def _apply(store):
        for manifest in manifests:
            if isinstance(manifest, PackageManifest):
                await store.apply_package(manifest.to_package())
            elif isinstance(manifest, ImageConfigManifest):
                await store.apply_image_config(manifest.to_image_config())

    client.run(_apply)
    for manifest in manifests:
        click.echo(f"{manifest.kind.lower()}/{manifest.metadata.name} applied")


@cli.group()
def get():
    """List packages, revisions or image configs"""
    pass


@get.command("packages")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def get_packages(client, output):
    """List all packages"""
    packages = client.run(lambda store: store.list_packages())

    if output != "table":
        render([p.to_dict() for p in packages], output)
        return

    headers = ["NAME", "SOURCE", "CURRENT", "HEALTHY", "ACTIVE", "PAUSED"]
    rows = []
    for package in packages:
        rows.append(
            [
                package.name,
                package.source,
                package.current_revision or "",
                package.conditions.status_of(ConditionType.HEALTHY).value,
                package.conditions.status_of(ConditionType.ACTIVE).value,
                "yes" if package.paused else "",
            ]
        )
    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@get.command("revisions")
@click.argument("package")
@click.pass_obj
def get_revisions(client, package):
    """List the revisions of a package, newest first"""
    revisions = client.run(lambda store: store.list_revisions(package))

    headers = ["NAME", "REVISION", "STATE", "HEALTHY", "SOURCE"]
    rows = [
        [r.name, r.revision, r.desired_state.value, r.health.value, r.source]
        for r in revisions
    ]
    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@get.command("imageconfigs")
@click.pass_obj
def get_image_configs(client):
    """List image configs"""
    configs = client.run(lambda store: store.list_image_configs())

    headers = ["NAME", "PREFIX", "REWRITE", "PULL SECRET"]
    rows = [
        [c.name, c.prefix, c.rewrite_prefix or "", c.pull_secret or ""]
        for c in configs
    ]
    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@cli.command()
@click.argument("package")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, package, output):
    """Describe a package and its revisions"""

    async def _describe(store):
        pkg = await store.get_package(package)
        revisions = await store.list_revisions(package)
        data = pkg.to_dict()
        data["revisions"] = [r.to_dict() for r in revisions]
        return data

    render(client.run(_describe), output)


@cli.command()
@click.argument("package")
@click.pass_obj
def pause(client, package):
    """Pause reconciliation of a package"""
    client.run(lambda store: store.set_annotation(package, ANNOTATION_PAUSED, "true"))
    click.echo(f"package/{package} paused")


@cli.command()
@click.argument("package")
@click.pass_obj
def resume(client, package):
    """Resume reconciliation of a package"""
    client.run(lambda store: store.remove_annotation(package, ANNOTATION_PAUSED))
    click.echo(f"package/{package} resumed")


@cli.command()
@click.argument("revision")
@click.pass_obj
def activate(client, revision):
    """Activate a revision of a package with Manual activation"""

    async def _activate(store):
        target = await store.get_revision(revision)
        for other in await store.list_revisions(target.package_name):
            if other.name != target.name and other.is_active:
                await store.set_revision_desired_state(
                    other.name, DesiredState.INACTIVE
                )
        await store.set_revision_desired_state(target.name, DesiredState.ACTIVE)
        return target

    target = client.run(_activate)
    click.echo(f"revision/{target.name} of package/{target.package_name} activated")


@cli.command()
@click.argument("package")
@click.confirmation_option(prompt="Are you sure you want to delete this package?")
@click.pass_obj
def delete(client, package):
    """Delete a package and all of its revisions"""
    deleted = client.run(lambda store: store.delete_package(package))
    if not deleted:
        raise click.ClickException(f"package {package!r} not found")
    click.echo(f"package/{package} deleted")


if __name__ == "__main__":
    cli()
