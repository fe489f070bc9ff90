"""
aws_es_proxy
A local HTTP proxy that signs requests with AWS Sig-V4 and relays them
to an Amazon Elasticsearch / OpenSearch Service domain.
"""

__version__ = "1.0.0"
