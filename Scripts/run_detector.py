"""
Run the detector from a source checkout, e.g.

    python Scripts/run_detector.py test cfg/coco.data cfg/yolo.json Models/yolo.onnx Media/dog.jpg --out predictions
    python Scripts/run_detector.py demo cfg/coco.data cfg/yolo.json Models/yolo.onnx --show -c 0
"""

from detector_runner.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
