from aws_es_proxy.entrypoints.proxy import run

run()
