"""Known AWS regions."""

AWS_REGIONS = frozenset(
    [
        "us-east-1",
        "us-east-2",
        "us-west-1",
        "us-west-2",
        "af-south-1",
        "ap-east-1",
        "ap-east-2",
        "ap-south-1",
        "ap-south-2",
        "ap-southeast-1",
        "ap-southeast-2",
        "ap-southeast-3",
        "ap-southeast-4",
        "ap-southeast-5",
        "ap-southeast-6",
        "ap-southeast-7",
        "ap-northeast-1",
        "ap-northeast-2",
        "ap-northeast-3",
        "ca-central-1",
        "ca-west-1",
        "eu-central-1",
        "eu-central-2",
        "eu-west-1",
        "eu-west-2",
        "eu-west-3",
        "eu-south-1",
        "eu-south-2",
        "eu-north-1",
        "il-central-1",
        "mx-central-1",
        "me-south-1",
        "me-central-1",
        "sa-east-1",
    ]
)


def is_valid_region(region):
    """Check if the given region is a known AWS region."""
    return isinstance(region, str) and region.strip() in AWS_REGIONS


def all_regions():
    """Return all known regions, sorted."""
    return sorted(AWS_REGIONS)
