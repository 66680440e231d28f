#!/usr/bin/env python3
"""
Tag the EC2 instances, EBS volumes and security groups of one VPC.

Every resource found in the VPC receives the same two tags:
product=<PRODUCT_VALUE> and env=<ENV_VALUE>. A failure on one resource is
reported and the sweep carries on with the rest; the exit status is non-zero
if any tag call failed.

Usage:
    python tag_resources.py REGION=eu-west-1 VPC_ID=vpc-0abc123 \\
        PRODUCT_VALUE=billing ENV_VALUE=staging

Environment:
    AWS_DEFAULT_REGION       used when REGION= is not given
    TAGGER_MAX_WORKERS       concurrent tag calls (default: 4)
    TAGGER_DRY_RUN           set to 1/true to only show what would be tagged
    TAGGER_DEADLINE_SECONDS  stop starting new tag calls after this long

Requirements:
    - boto3
    - AWS credentials with ec2:DescribeInstances, ec2:DescribeSecurityGroups
      and ec2:CreateTags
"""

import argparse
import os
import re
import sys
from dataclasses import dataclass
from typing import Iterator, Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from batch import BatchResult, Deadline, client_config, run_batch
from cli_args import ConfigError, env_flag, env_float, env_int, parse_key_values, require
from run_log import close_logger, setup_logger


RECOGNIZED_KEYS = ("REGION", "VPC_ID", "PRODUCT_VALUE", "ENV_VALUE")
VPC_ID_PATTERN = re.compile(r"^vpc-[0-9a-f]+$")
DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class TaggerConfig:
    """Parameters of one tagging run."""
    region: str
    vpc_id: str
    product_value: str
    env_value: str
    max_workers: int = DEFAULT_MAX_WORKERS
    dry_run: bool = False
    deadline_seconds: float = None

    @classmethod
    def from_tokens(cls, tokens: list[str], environ: Mapping[str, str]) -> "TaggerConfig":
        values = parse_key_values(tokens, RECOGNIZED_KEYS)
        if not values.get("REGION") and environ.get("AWS_DEFAULT_REGION"):
            values["REGION"] = environ["AWS_DEFAULT_REGION"]

        region = require(values, "REGION")
        vpc_id = require(values, "VPC_ID")
        if not VPC_ID_PATTERN.match(vpc_id):
            raise ConfigError(f"VPC_ID must look like vpc-<hex>, got {vpc_id!r}")

        return cls(
            region=region,
            vpc_id=vpc_id,
            product_value=require(values, "PRODUCT_VALUE"),
            env_value=require(values, "ENV_VALUE"),
            max_workers=env_int(environ, "TAGGER_MAX_WORKERS", DEFAULT_MAX_WORKERS),
            dry_run=env_flag(environ, "TAGGER_DRY_RUN"),
            deadline_seconds=env_float(environ, "TAGGER_DEADLINE_SECONDS"),
        )

    def tag_pairs(self) -> list[dict]:
        return [
            {"Key": "product", "Value": self.product_value},
            {"Key": "env", "Value": self.env_value},
        ]


@dataclass(frozen=True)
class TagTarget:
    kind: str
    resource_id: str


class Ec2ResourceClient:
    """List and tag the EC2 resources of a VPC."""

    def __init__(self, session: boto3.Session, deadline: Deadline = None, max_workers: int = 1):
        self.ec2 = session.client("ec2", config=client_config(deadline, max_workers))

    def _vpc_filter(self, vpc_id: str) -> list[dict]:
        return [{"Name": "vpc-id", "Values": [vpc_id]}]

    def _iter_instances(self, vpc_id: str) -> Iterator[dict]:
        paginator = self.ec2.get_paginator("describe_instances")
        for page in paginator.paginate(Filters=self._vpc_filter(vpc_id)):
            for reservation in page.get("Reservations", []):
                yield from reservation.get("Instances", [])

    def iter_instance_ids(self, vpc_id: str) -> Iterator[str]:
        for instance in self._iter_instances(vpc_id):
            yield instance["InstanceId"]

    def iter_volume_ids(self, vpc_id: str) -> Iterator[str]:
        """EBS volumes attached to the VPC's instances, flattened across instances."""
        for instance in self._iter_instances(vpc_id):
            for mapping in instance.get("BlockDeviceMappings", []):
                ebs = mapping.get("Ebs")
                if ebs and ebs.get("VolumeId"):
                    yield ebs["VolumeId"]

    def iter_security_group_ids(self, vpc_id: str) -> Iterator[str]:
        paginator = self.ec2.get_paginator("describe_security_groups")
        for page in paginator.paginate(Filters=self._vpc_filter(vpc_id)):
            for group in page.get("SecurityGroups", []):
                yield group["GroupId"]

    def create_tags(self, resource_id: str, tags: list[dict]):
        self.ec2.create_tags(Resources=[resource_id], Tags=tags)


class ResourceTagger:
    def __init__(self, client: Ec2ResourceClient, config: TaggerConfig, logger):
        self.client = client
        self.config = config
        self.logger = logger

    def collect(self) -> list[TagTarget]:
        """Instances, then volumes, then security groups; each ID appears once."""
        vpc_id = self.config.vpc_id
        sources = [
            ("Instance", self.client.iter_instance_ids(vpc_id)),
            ("Volume", self.client.iter_volume_ids(vpc_id)),
            ("Security group", self.client.iter_security_group_ids(vpc_id)),
        ]

        targets = []
        seen = set()
        for kind, resource_ids in sources:
            for resource_id in resource_ids:
                if resource_id in seen:
                    continue
                seen.add(resource_id)
                targets.append(TagTarget(kind, resource_id))
        return targets

    def tag(self, target: TagTarget) -> TagTarget:
        product, env = self.config.product_value, self.config.env_value
        if self.config.dry_run:
            self.logger.info(f"[DRY-RUN] Would tag {target.kind}: {target.resource_id} "
                             f"with product:{product} & env:{env}")
            return target

        self.logger.info(f"Creating tags product:{product} & env:{env} on {target.kind}: {target.resource_id}")
        self.client.create_tags(target.resource_id, self.config.tag_pairs())
        return target

    def run(self, deadline: Deadline = None) -> BatchResult:
        """Tag every resource of the VPC. Listing errors propagate to the caller."""
        config = self.config
        self.logger.info(
            f"This script will tag: EC2 Instances, EBS Volumes & Security Groups in the AWS Region: "
            f"{config.region} under the VPC: {config.vpc_id} with the following tags: "
            f"Key=product,Value={config.product_value} Key=env,Value={config.env_value}"
        )
        if config.dry_run:
            self.logger.info("Dry run: no tags will be created")
        if deadline is not None and deadline.seconds:
            self.logger.info(f"Deadline: {deadline.seconds:g}s")

        targets = self.collect()
        if not targets:
            self.logger.info(f"No instances, volumes or security groups found in {config.vpc_id}")

        result = run_batch(targets, self.tag, max_workers=config.max_workers, deadline=deadline)

        for failure in result.failures:
            target = failure.item
            self.logger.error(f"Error tagging {target.kind}: {target.resource_id}: {failure.error}")
        if result.stopped_early:
            unattempted = len(targets) - len(result.succeeded) - len(result.failures)
            self.logger.error(f"Deadline reached: {unattempted} resource(s) were not attempted")

        self.logger.info("=" * 60)
        self.logger.info("Summary:")
        self.logger.info(f"  {'Would tag' if config.dry_run else 'Tagged'}: {len(result.succeeded)}")
        self.logger.info(f"  Errors: {len(result.failures)}")
        return result


def main(argv: list[str] = None, environ: Mapping[str, str] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Tag the EC2 instances, EBS volumes and security groups of a VPC "
                    "with product and env tags"
    )
    parser.add_argument(
        "params",
        nargs="*",
        metavar="KEY=VALUE",
        help="REGION, VPC_ID, PRODUCT_VALUE and ENV_VALUE; other keys are ignored"
    )
    args = parser.parse_args(argv)
    environ = os.environ if environ is None else environ

    try:
        config = TaggerConfig.from_tokens(args.params, environ)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    deadline = Deadline(config.deadline_seconds)
    logger = setup_logger("tag_resources")
    try:
        session = boto3.Session(region_name=config.region)
        tagger = ResourceTagger(Ec2ResourceClient(session, deadline, config.max_workers), config, logger)
        result = tagger.run(deadline)
    except NoCredentialsError:
        logger.error("Error: AWS credentials not found")
        logger.error("Configure via environment variables, ~/.aws/credentials, or IAM role")
        return 1
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Error listing resources in {config.vpc_id}: {e}")
        return 1
    finally:
        close_logger(logger)

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
