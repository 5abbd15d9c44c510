# Application entry point
import argparse
import os
import sys

from hist_equalizer.config import settings
from hist_equalizer.io.image_loader import load_image
from hist_equalizer.io.image_saver import save_image
from hist_equalizer.processing.equalization import EqualizationPipeline
from hist_equalizer.utils.errors import AppError, format_user_error
from hist_equalizer.utils.gpu_device import format_platforms, get_device
from hist_equalizer.utils.logger import set_level
from hist_equalizer.utils.profiler import Profiler, format_array


def build_parser():
    """Command line options: device selection, listing, output and display."""
    parser = argparse.ArgumentParser(
        prog="hist-equalizer",
        description="Histogram equalization of an 8-bit image on a compute device.",
    )
    parser.add_argument("image", nargs="?", help="input image file")
    # A trailing -p/-d without a value keeps the default
    parser.add_argument("-p", dest="platform", type=int, nargs="?",
                        const=settings.CLI_DEFAULTS["platform"], default=settings.CLI_DEFAULTS["platform"],
                        help="select platform")
    parser.add_argument("-d", dest="device", type=int, nargs="?",
                        const=settings.CLI_DEFAULTS["device"], default=settings.CLI_DEFAULTS["device"],
                        help="select device")
    parser.add_argument("-l", dest="list_devices", action="store_true",
                        help="list all platforms and devices")
    parser.add_argument("-c", dest="channel", type=int, default=None,
                        help="equalize only this channel (default: every colour channel, alpha kept)")
    parser.add_argument("-o", dest="output", default=None,
                        help="output image file (default: <input>%s<ext>)" % settings.CLI_DEFAULTS["output_suffix"])
    parser.add_argument("-s", dest="show", action="store_true",
                        help="show input and output images (ESC to close)")
    parser.add_argument("-v", dest="verbose", action="store_true", help="debug logging")
    return parser


def default_output_path(input_path):
    """<stem>_equalized<ext> next to the input."""
    stem, ext = os.path.splitext(input_path)
    return f"{stem}{settings.CLI_DEFAULTS['output_suffix']}{ext or '.png'}"


def print_results(results):
    """Print histogram, cumulative histogram, LUT and stage timings per channel."""
    overall = Profiler()
    for result in results:
        print(f"Channel {result.channel}:")
        print(format_array("Histogram", result.histogram))
        print(format_array("Cumulative histogram", result.cumulative))
        print(format_array("LUT", result.lut))
        profiler = Profiler(result.events)
        print(profiler.render())
        overall.extend(result.events)
    if len(results) > 1:
        print(f"All channels kernel execution time [ns]: {overall.total_ns} ({overall.total_ns / 1000.0:.3f} us)")


def run(args):
    """Equalize args.image on the selected device. Raises AppError on failure."""
    device = get_device(args.platform, args.device)
    print(f"Running on {device.platform.name}, {device.name}")

    image = load_image(args.image)
    pipeline = EqualizationPipeline(device)

    if args.channel is None:
        results = pipeline.run_all_channels(image)
    else:
        results = [pipeline.run(image, args.channel)]

    print_results(results)

    output_image = results[-1].image
    output_path = args.output or default_output_path(args.image)
    save_image(output_image, output_path)
    print(f"Saved equalized image to {output_path}")

    if args.show:
        from hist_equalizer.io.display import show_images
        show_images({"input": image, "output": output_image})

    return 0


def main(argv=None):
    """Main function to run the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        set_level("DEBUG")

    if args.list_devices:
        print(format_platforms())
        return 0

    if not args.image:
        parser.print_usage(sys.stderr)
        print("ERROR: no input image given", file=sys.stderr)
        return 1

    try:
        return run(args)
    except AppError as e:
        print(f"ERROR: {format_user_error(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    # This block ensures the code runs only when the script is executed directly
    sys.exit(main())
