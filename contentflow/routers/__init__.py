from contentflow.routers import catalog, flows, generation, runs

__all__ = ["catalog", "flows", "generation", "runs"]
