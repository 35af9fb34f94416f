from .service import ConversionPipeline
from .models import ConversionJob, JobStage, Succeeded, Failed

__all__ = ["ConversionPipeline", "ConversionJob", "JobStage", "Succeeded", "Failed"]
